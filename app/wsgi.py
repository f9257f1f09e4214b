from app.followhub import create_app

app = create_app()
