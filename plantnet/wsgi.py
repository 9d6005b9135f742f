import os

from plantnet import create_app

app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.logger.info("plantNet is running on port %s", port)
    app.run(host="0.0.0.0", port=port)
