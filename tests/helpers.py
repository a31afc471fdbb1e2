from app.core.security import create_access_token
from app.crud import request_type as request_type_crud


def user_step(name, *users):
    return {"name": name, "approvers": [{"approver_type": "user", "approver_id": x.id} for x in users]}


def make_type(db, steps, name="Equipment Request", fields=None, has_fulfillment=False, publish=True):
    data = {
        "name": name,
        "has_fulfillment": has_fulfillment,
        "is_published": publish,
        "fields": fields if fields is not None else [
            {"label": "Purpose", "field_type": "text", "is_required": True},
        ],
        "approval_steps": steps,
    }
    return request_type_crud.create_request_type(db, data, None)


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
