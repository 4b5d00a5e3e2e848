"""interfaces/ — terminal rendering for the CLI subcommands."""
