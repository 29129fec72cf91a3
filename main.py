"""
Session Proxy Entry Point

Run with: uvicorn main:app --port 8020
Or: python main.py
"""

from session_proxy.main import create_app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)
