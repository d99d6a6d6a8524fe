from __future__ import annotations

import argparse

from .app import create_form_runtime_app, create_schema_studio_app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run assessment form configuration services")
    parser.add_argument("service", choices=["studio", "runtime"])
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--db", default="./data.db")
    args = parser.parse_args()

    if args.service == "studio":
        app = create_schema_studio_app(args.db)
    else:
        app = create_form_runtime_app(args.db)

    app.run(host=args.host, port=args.port, debug=False)


if __name__ == "__main__":
    main()
