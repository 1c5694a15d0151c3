from asgiref.wsgi import WsgiToAsgi
from valentina import create_app

# Create the standard Flask app (WSGI)
flask_app = create_app()

# Wrap the Flask app for ASGI servers (uvicorn, hypercorn)
app = WsgiToAsgi(flask_app)
