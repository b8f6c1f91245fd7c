from nodesched.cli.app import app

app()
