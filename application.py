"""
WSGI entry point (Elastic Beanstalk looks for `application`).

    gunicorn application:application
"""
import os
import sys

# Repo root on the path so `backend` imports without installation
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from backend.app import app as application

if __name__ == "__main__":
    application.run(debug=os.getenv('FLASK_DEBUG', 'false').lower() == 'true')
