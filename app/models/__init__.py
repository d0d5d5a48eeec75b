from app.models.store import Store
from app.models.customer import Customer, CustomerTag, CustomerTagLink
from app.models.order import Order
from app.models.cart import AbandonedCart
from app.models.crm import CrmNote, CrmTask
from app.models.automation import Automation, AutomationRun
