from .city import City
from .document import Document
from .chat import Conversation, Message, MessageRole
from .ticket import Ticket
