from calwidget.cli import cli

cli()
