from mergecast import create_app
from mergecast.settings import Settings

settings = Settings.from_env()
app = create_app(settings)

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=settings.port)
