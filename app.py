"""Application entry point for the clinic slots service."""

import logging

from clinicslots.webapp import create_app


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


_setup_logging()
app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
