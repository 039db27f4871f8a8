from linkbridge.schemas.profile import Profile
from linkbridge.schemas.session import InvalidRecordError, Session
