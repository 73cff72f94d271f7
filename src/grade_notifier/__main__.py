from grade_notifier.main import cli

cli()
