from meeting_analyst.main import create_app

app = create_app()
