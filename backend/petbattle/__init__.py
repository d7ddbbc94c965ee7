from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from petbattle.main import main
    flask_app.register_blueprint(main)

    # One battle server per app; handlers reach it through app.extensions
    from petbattle.realtime.server import BattleServer, SocketIOTransport
    from petbattle.services.pet_store import SqlPetStore
    flask_app.extensions['battle_server'] = BattleServer.from_config(
        flask_app.config,
        SocketIOTransport(socketio, namespace='/ws'),
        flask_app.logger,
        pet_store=SqlPetStore(flask_app),
    )

    from petbattle.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace='/ws')

    from petbattle.models import User, Pet

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users, one starter pet each
            for name in ['testuser1', 'testuser2', 'testuser3']:
                user = User(username=name, gold=0)
                user.set_password('password')
                db.session.add(user)
                db.session.flush()
                db.session.add(Pet(user_id=user.id, name=f"{name}'s pet", level=1, exp=0, max_exp=100, hp=100, max_hp=100))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
