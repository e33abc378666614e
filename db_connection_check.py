from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from teadesk.config import settings


def main(database_url: str | None = None) -> bool:
    database_url = database_url or settings.database_url
    print(f"DATABASE_URL={database_url}")
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("DB connection OK")
        return True
    except SQLAlchemyError as exc:
        print("DB connection FAILED")
        print(exc)
        return False
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
