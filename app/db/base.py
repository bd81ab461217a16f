from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Note: Models are registered through app.db.models, which init_db() imports
# All models must import Base from this module
