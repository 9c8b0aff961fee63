import uvicorn
import sys

from imageshelf import app, config

if __name__ == "__main__":
    # This check is crucial for distinguishing between development and packaged mode
    is_packaged = getattr(sys, 'frozen', False)

    if is_packaged or not config.DEV_MODE:
        uvicorn.run(
            app,
            host=config.HOST,
            port=config.PORT
        )
    else:
        # Running as a standard Python script.
        # Set IMAGESHELF_HOST=127.0.0.1 if you don't want other devices in your LAN reaching the library
        uvicorn.run(
            "imageshelf:app",
            host=config.HOST,
            port=config.PORT,
            reload=True
        )
