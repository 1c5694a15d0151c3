from valentina import create_app, db, ensure_admin_user


def setup_database():
    """
    Creates all tables and seeds the admin user from ADMIN_USER / ADMIN_PASS.
    Run once before the first start when AUTO_CREATE_TABLES is disabled.
    """
    app = create_app()

    with app.app_context():
        print(f"Creating tables in {app.config['SQLALCHEMY_DATABASE_URI']} ...")
        db.create_all()
        ensure_admin_user(app)
        print("Database tables created successfully.")


if __name__ == "__main__":
    setup_database()
