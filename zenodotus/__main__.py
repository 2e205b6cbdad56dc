from zenodotus.cli import app

app(prog_name="zenodotus")
