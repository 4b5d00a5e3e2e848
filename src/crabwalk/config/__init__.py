"""config/ — runtime settings (config.yaml + .env)."""
