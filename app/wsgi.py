from app.geppo import create_app

app = create_app()
