# main.py
# uvicorn main:app --reload
from authcore.main import create_app

app = create_app()
