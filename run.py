import os

from valentina import create_app

app = create_app()

if __name__ == '__main__':
    # Local development only; production imports `app` from a WSGI server like Gunicorn.
    app.run(host='0.0.0.0', port=int(os.getenv("PORT", 10000)), debug=False)
