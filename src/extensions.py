from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager

# Shared extension instances, bound to the app in create_app()
db = SQLAlchemy()
jwt = JWTManager()
