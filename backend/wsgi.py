from carparts import create_app

app = create_app()
