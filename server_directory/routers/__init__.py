"""
API Routers Package

Router Structure:
- servers.py: /api/v1/servers/* endpoints (listing, categories, submit)
- ratings.py: /api/v1/ratings/* endpoints (rate, edit, delete, vote, flag)
- users.py: /api/v1/users/* endpoints (a user's ratings)

Each router is imported and registered in main.py.
"""

from server_directory.routers.ratings import router as ratings_router
from server_directory.routers.servers import router as servers_router
from server_directory.routers.users import router as users_router

__all__ = [
    "servers_router",
    "ratings_router",
    "users_router",
]
