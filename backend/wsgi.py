# Overview: WSGI entry point for the Flask application.

from fulfillment import create_app

app = create_app()
