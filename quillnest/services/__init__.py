# Services package init
"""
Quillnest Backend — Services Layer
====================================

What:  Business logic between the routes (HTTP) and the database.

Service Inventory:
    - CredentialStore:  every read/write of the users table
    - TokenService:     signed session / verification / reset tokens
    - passwords:        bcrypt hashing helpers
    - AuthService:      signup, verify, login, password reset, signout
    - UserService:      profiles, pictures, account deletion, admin promotion
    - PostService:      posts and their media files
    - CommentService:   comments, like and share toggles
    - FileService:      upload policy (types, sizes, counts)
    - MediaService:     media host port (Cloudinary)
    - MailService:      outgoing mail port (SendGrid, or the log)
    - resilience:       circuit breaker and retrying upstream caller

Services take the database session as an argument on every call and keep
no per-request state, so one instance per application is enough.
"""
