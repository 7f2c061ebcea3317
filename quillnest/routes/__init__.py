# Routes package init
"""
Quillnest Backend — API Routes Package
========================================

Route Inventory (prefix /api/v1 unless noted):
    - auth.py:      signup, verify/{id}/{token}, login, forgot-password,
                    reset-password, signout
    - users.py:     get-users, get-all-users, update-user, profilePic,
                    delete-user, make-admin/{id}
    - posts.py:     post/create-post, post/get-posts, post/get-post/{id},
                    post/update-post/{id}, post/delete-post/{id}
    - comments.py:  comment/add-comment, view-comments, view-comment,
                    update-comment, delete-comment, delete-comments,
                    like-post, share-post
    - uploads.py:   POST /upload/image, POST /upload/document (no prefix)
    - health.py:    GET /health (no prefix)

Routes are thin: extract input, call a service, shape the response.
Permission checks other than "is authenticated" / "is admin" live in the
services.
"""
