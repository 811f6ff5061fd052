# ==============================================================================
# WSGI ENTRY POINT
# ==============================================================================
# Layout:
#   repo_root/
#     wsgi.py          <- this file
#     pyproject.toml
#     tire_store/      <- application package
#
# Production:  point the WSGI server at wsgi:app
# Development: python wsgi.py
# ==============================================================================

from tire_store.main import app

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5000)
