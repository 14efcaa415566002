from bcp_migrate.cli import app

if __name__ == "__main__":
    app()
