# Models package init
"""
Importing this package registers every table with `Base.metadata`
(used by Alembic autogenerate and `Database.create_all`).
"""

from quillnest.models.comment import Comment, Like, Share
from quillnest.models.post import MediaFile, Post
from quillnest.models.user import Admin, Picture, User

__all__ = [
    "Admin",
    "Comment",
    "Like",
    "MediaFile",
    "Picture",
    "Post",
    "Share",
    "User",
]
