from valentina import create_app, db


def delete_all_tables():
    """
    Drops every Valentina table: chats, leads, contacts, inventory, config
    and dashboard users. The admin is seeded again on the next start.
    """
    app = create_app()
    with app.app_context():
        tables = ", ".join(sorted(db.metadata.tables))
        print(f"Dropping tables in {app.config['SQLALCHEMY_DATABASE_URI']}: {tables}")
        db.drop_all()
        print("All tables dropped successfully.")


if __name__ == "__main__":
    confirm = input("This deletes all chat history, leads and inventory. Type 'yes' to continue: ")
    if confirm.strip().lower() == 'yes':
        delete_all_tables()
    else:
        print("Operation cancelled.")
