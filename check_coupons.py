from storefront import create_app
from storefront.model import Coupon
from storefront.services.coupon_service import coupon_stats
from storefront.services.discount_format import format_label

# Create an app instance
app = create_app()

# Use the app's context to access the database
with app.app_context():
    for coupon in Coupon.query.order_by(Coupon.code).all():
        limit = coupon.usage_limit if coupon.usage_limit is not None else "unlimited"
        print(f"Code: {coupon.code}")
        print(f"Discount: {format_label(coupon.discount_type, coupon.discount_value, app.config['CURRENCY_SYMBOL'])}")
        print(f"Active: {coupon.is_active}")
        print(f"Used: {coupon.usage_count} / {limit}")
        print(f"Window: {coupon.starts_at} -> {coupon.expires_at}")
        print(f"Products: {sorted(coupon.product_ids()) or 'all'} ({coupon.product_inclusion_type})")
        print("=" * 50)

    for key, value in coupon_stats().items():
        print(f"{key}: {value}")
