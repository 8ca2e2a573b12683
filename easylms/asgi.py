# uvicorn easylms.asgi:app
from easylms.main import create_app

app = create_app()
