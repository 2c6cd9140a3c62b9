# default data + reset
import logging

from database import (
    DEPARTMENTS,
    USERS,
    count_documents,
    delete_all_documents,
    insert_many_documents,
)

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_ID = "admin"

DEFAULT_DEPARTMENTS = [
    {
        "name": "Technology",
        "displayName": "Tecnología",
        "description": "Departamento de desarrollo de software y tecnología",
    },
    {
        "name": "Marketing",
        "displayName": "Marketing",
        "description": "Departamento de marketing y comunicaciones",
    },
    {
        "name": "Sales",
        "displayName": "Ventas",
        "description": "Departamento de ventas y desarrollo comercial",
    },
    {
        "name": "Human Resources",
        "displayName": "Recursos Humanos",
        "description": "Departamento de recursos humanos y gestión de personal",
    },
]


def ensure_seed_data() -> None:
    """Ensure default departments and an admin account exist in DB"""
    if count_documents(DEPARTMENTS) == 0:
        insert_many_documents(DEPARTMENTS, [{**d, "isActive": True} for d in DEFAULT_DEPARTMENTS])
        logger.info("Seeded %d departments", len(DEFAULT_DEPARTMENTS))

    if count_documents(USERS, {"role": "Admin"}) == 0:
        insert_many_documents(USERS, [{
            "id": DEFAULT_ADMIN_ID,
            "name": "Admin User",
            "email": "admin@soyelmejor.com",
            "role": "Admin",
            "department": None,
            "avatar": "https://picsum.photos/seed/admin/100",
            "isActive": True,
        }])
        logger.info("Seeded default admin account %s", DEFAULT_ADMIN_ID)


def reset_with_seed_data() -> int:
    """Delete every collection and put the defaults back. Returns the deleted count."""
    deleted = delete_all_documents()
    ensure_seed_data()
    logger.info("Database reset complete, %d documents deleted", deleted)
    return deleted
