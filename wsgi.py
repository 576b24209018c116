from gympos import create_app

app = create_app()
