import logging
from functools import wraps
from flask import Blueprint, request, jsonify, redirect, url_for, session, render_template
from marshmallow import ValidationError
from sqlalchemy import select

from valentina import limiter
from valentina.exceptions import ApiError
from valentina.models import db, User
from valentina.schemas import LoginSchema

security_logger = logging.getLogger('security')

auth_bp = Blueprint('auth', __name__)


def is_logged_in():
    return session.get('admin_logged_in') is True


def login_required(view):
    """Rejects requests without a dashboard session."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not is_logged_in():
            raise ApiError("No auth", 401)
        return view(*args, **kwargs)
    return wrapper


@auth_bp.route("/auth", methods=["POST"])
@limiter.limit("30 per hour")
def login():
    """Dashboard login; accepts JSON or form fields ``user`` and ``pass``."""
    body = request.get_json(silent=True) or request.form.to_dict()
    try:
        data = LoginSchema().load(body)
    except ValidationError:
        raise ApiError("Invalid credentials", 401, payload={"success": False})

    user = db.session.execute(
        select(User).filter_by(username=data['user'], is_admin=True)
    ).scalar_one_or_none()
    if user and user.check_password(data['password']):
        session.clear()
        session.permanent = True
        session['admin_logged_in'] = True
        session['admin_user'] = user.username
        security_logger.info(f"Admin user {user.username} logged in from {request.remote_addr}.")
        return jsonify({"success": True})

    security_logger.warning(f"Failed login attempt for username: {data['user']} from {request.remote_addr}")
    raise ApiError("Invalid credentials", 401, payload={"success": False})


@auth_bp.route("/logout")
def logout():
    user = session.get('admin_user', 'Unknown')
    session.clear()
    security_logger.info(f"Admin user {user} logged out.")
    return redirect(url_for('auth.login_page'))


@auth_bp.route("/login")
def login_page():
    if is_logged_in():
        return redirect(url_for('auth.index'))
    return render_template('login.html')


@auth_bp.route("/")
def index():
    """Dashboard shell; anonymous visitors go to the login page."""
    if not is_logged_in():
        return redirect(url_for('auth.login_page'))
    return render_template('index.html', user=session.get('admin_user'))
