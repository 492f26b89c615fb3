"""
Blueprint registration for the classroom token economy API.

All blueprints carry full ``/api/...`` paths and are registered without URL prefixes.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.classrooms import bp as classrooms_bp
    from blueprints.assignments import bp as assignments_bp
    from blueprints.wallets import bp as wallets_bp
    from blueprints.store import bp as store_bp
    from blueprints.marketplace import bp as marketplace_bp
    from blueprints.time_tracking import bp as time_tracking_bp
    from blueprints.analytics import bp as analytics_bp
    from blueprints.gamification import bp as gamification_bp
    from blueprints.announcements import bp as announcements_bp

    app.register_blueprint(classrooms_bp)
    app.register_blueprint(assignments_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(store_bp)
    app.register_blueprint(marketplace_bp)
    app.register_blueprint(time_tracking_bp)
    app.register_blueprint(analytics_bp)
    app.register_blueprint(gamification_bp)
    app.register_blueprint(announcements_bp)
