from mangum import Mangum
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from prizepool.api import create_app
from prizepool.service import PrizePoolService
from prizepool.storage import make_engine

app = create_app(PrizePoolService(make_engine()), root_path="/api")

handler = Mangum(app)
