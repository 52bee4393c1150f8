from fastapi import Header

def get_current_user(x_user_id: str = Header(default="admin")) -> str:
    # Identity is issued upstream; the gateway forwards the caller as X-User-Id
    return x_user_id
