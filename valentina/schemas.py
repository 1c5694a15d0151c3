from marshmallow import Schema, fields, validate, EXCLUDE


class BaseSchema(Schema):
    class Meta:
        unknown = EXCLUDE


class LoginSchema(BaseSchema):
    user = fields.Str(required=True)
    password = fields.Str(required=True, data_key="pass")


class TagSchema(BaseSchema):
    name = fields.Str(required=True, validate=validate.Length(min=1))
    color = fields.Str(load_default=None)


class ShortcutSchema(BaseSchema):
    keyword = fields.Str(required=True, validate=validate.Length(min=1))
    text = fields.Str(load_default="")


class IdSchema(BaseSchema):
    id = fields.Int(required=True)


class IndexSchema(BaseSchema):
    index = fields.Int(required=True)


class PhoneSchema(BaseSchema):
    phone = fields.Str(required=True, validate=validate.Length(min=1))


class ContactSchema(PhoneSchema):
    name = fields.Str(load_default=None)


class SendMessageSchema(PhoneSchema):
    message = fields.Str(required=True, validate=validate.Length(min=1))


class UploadSendSchema(PhoneSchema):
    type = fields.Str(
        required=True,
        validate=validate.OneOf(["image", "video", "audio", "document"])
    )


class ChatActionSchema(PhoneSchema):
    action = fields.Str(required=True)
    value = fields.Raw(load_default=None)


class ToggleBotSchema(PhoneSchema):
    active = fields.Bool(required=True)


class RuleSchema(BaseSchema):
    rule = fields.Str(required=True, validate=validate.Length(min=1))


class LeadUpdateSchema(BaseSchema):
    id = fields.Int(required=True)
    field = fields.Str(required=True)
    value = fields.Raw(load_default=None, allow_none=True)


class SandboxSchema(BaseSchema):
    message = fields.Str(required=True)
