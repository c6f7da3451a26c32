from app.sms import create_app

app = create_app()
