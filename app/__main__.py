from app import create_app

if __name__ == "__main__":
    app = create_app()
    cfg = app.config["CFG"]
    app.run(host=cfg.HOST, port=cfg.PORT)
