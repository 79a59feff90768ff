from turntable.cli.app import app

app()
