# clinic_api.py
import logging

import stripe
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from app.config import settings
from app.errors import AppointmentError, AppointmentNotFound, IllegalStateError
from app.lifecycle import AppointmentLifecycle
from database.db_utils import AppointmentStore
from tools.payment_tools import build_payment_provider
from tools.video_tools import JitsiRoomProvisioner
from utils.email_sender import BackgroundNotifier

logging.basicConfig(level=logging.INFO,
                    format='%(asctime)s - %(levelname)s - %(message)s')


def build_lifecycle() -> AppointmentLifecycle:
    return AppointmentLifecycle(
        store=AppointmentStore(),
        notifier=BackgroundNotifier(),
        payment_provider=build_payment_provider(),
        room_provisioner=JitsiRoomProvisioner(),
    )


def request_data() -> dict:
    """Body of the request, whether it was sent as JSON or as a form."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def create_app(lifecycle: AppointmentLifecycle = None) -> Flask:
    app = Flask(__name__)
    lifecycle = lifecycle or build_lifecycle()
    app.extensions["lifecycle"] = lifecycle

    @app.errorhandler(AppointmentError)
    def handle_appointment_error(error: AppointmentError):
        if error.status_code >= 500:
            logging.error(f"{error.code} while handling {request.method} {request.path}: {error.message}")
        else:
            logging.info(f"{error.code} for {request.method} {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        # Let Flask render its own 404/405 responses
        if isinstance(error, HTTPException):
            return error
        logging.critical(f"Unhandled error in {request.method} {request.path}: {error}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"}), 200

    # --- 1. Book ---
    @app.route("/appointments", methods=["POST"])
    def book_appointment():
        data = request_data()
        appointment = lifecycle.book(
            name=data.get("name"),
            email=data.get("email"),
            phone=data.get("phone") or data.get("number"),
            date=data.get("date"),
            time=data.get("time"),
            consult_type=data.get("consultType") or data.get("consult_type"),
        )
        return jsonify({"message": "Request sent successfully", "appointmentId": appointment.id}), 200

    @app.route("/appointments/<appointment_id>", methods=["GET"])
    def get_appointment(appointment_id):
        return jsonify(lifecycle.get(appointment_id).to_dict()), 200

    # --- 2. Doctor's decision page ---
    @app.route("/appointments/<appointment_id>/decision", methods=["GET"])
    def decision(appointment_id):
        action = request.args.get("action", "confirm")
        appointment = lifecycle.get_decision(appointment_id, action)
        return jsonify({
            "appointment": appointment.to_dict(),
            "action": action,
            "submitUrl": f"{lifecycle.base_url}/appointments/{appointment.id}/{action}",
        }), 200

    # --- 3. Confirm ---
    @app.route("/appointments/<appointment_id>/confirm", methods=["POST"])
    def confirm_appointment(appointment_id):
        data = request_data()
        appointment = lifecycle.confirm(appointment_id, data.get("finalTime") or data.get("final_time"))
        return jsonify({"message": "Confirmed successfully", "appointment": appointment.to_dict()}), 200

    # --- 4. Decline ---
    @app.route("/appointments/<appointment_id>/decline", methods=["POST"])
    def decline_appointment(appointment_id):
        data = request_data()
        appointment = lifecycle.decline(appointment_id, data.get("reason") or data.get("declineReason"))
        return jsonify({"message": "Appointment declined", "appointment": appointment.to_dict()}), 200

    # --- 5. Payment ---
    @app.route("/appointments/<appointment_id>/payment", methods=["GET"])
    def payment_instructions(appointment_id):
        instructions, appointment = lifecycle.get_payment_instructions(appointment_id)
        body = instructions.to_dict()
        body["paymentDone"] = bool(appointment.payment_done)
        return jsonify(body), 200

    @app.route("/appointments/<appointment_id>/payment/complete", methods=["POST"])
    def complete_payment(appointment_id):
        appointment = lifecycle.complete_payment(appointment_id)
        access = lifecycle.get_consultation_access(appointment.id)
        return jsonify({
            "message": "Payment recorded",
            "appointment": appointment.to_dict(),
            "consultation": access.to_dict(),
        }), 200

    # --- 6. Consultation ---
    @app.route("/appointments/<appointment_id>/consultation", methods=["GET"])
    def consultation(appointment_id):
        return jsonify(lifecycle.get_consultation_access(appointment_id).to_dict()), 200

    # --- Stripe webhook ---
    @app.route("/stripe-webhook", methods=["POST"])
    def stripe_webhook():
        payload = request.get_data()
        sig_header = request.headers.get("stripe-signature")

        if not settings.STRIPE_WEBHOOK_SECRET:
            logging.error("Stripe webhook called but STRIPE_WEBHOOK_SECRET is not configured.")
            return jsonify({'error': 'Webhook not configured'}), 400

        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError as e:
            logging.error(f"Invalid Stripe webhook payload: {e}")
            return jsonify({'error': 'Invalid payload'}), 400
        except stripe.SignatureVerificationError as e:
            logging.error(f"Invalid Stripe webhook signature: {e}")
            return jsonify({'error': 'Invalid signature'}), 400

        if event['type'] == 'checkout.session.completed':
            session = event['data']['object']
            appointment_id = (session.get('metadata') or {}).get('appointment_id')
            if not appointment_id:
                logging.warning(f"Checkout session {session.get('id')} has no appointment_id in its metadata.")
                return jsonify({'status': 'ignored'}), 200
            try:
                lifecycle.complete_payment(appointment_id)
            except (IllegalStateError, AppointmentNotFound) as e:
                # Stripe retries non-2xx responses; this event can never succeed
                logging.error(f"Stripe payment for appointment {appointment_id} could not be applied: {e.message}")
                return jsonify({'status': 'ignored'}), 200
            logging.info(f"Stripe checkout completed for appointment {appointment_id}.")
        else:
            logging.info(f"Unhandled Stripe event: {event['type']}")

        return jsonify({'status': 'success'}), 200

    return app


if __name__ == '__main__':
    from database.db_utils import create_db_and_tables
    logging.info("Checking/creating database tables...")
    create_db_and_tables()
    create_app().run(debug=False, host='0.0.0.0', port=5000)
