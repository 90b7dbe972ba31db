from mailferry.cli import app

app()
