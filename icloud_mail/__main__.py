from icloud_mail.cli.main import cli

cli()
