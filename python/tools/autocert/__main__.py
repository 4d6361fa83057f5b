"""
Allows the package to be run as a script.

Example:
    python -m autocert install --domain example.com --email admin@example.com --nginx
"""

from .cli import app

if __name__ == "__main__":
    app()
