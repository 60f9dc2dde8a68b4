from alembic import op

revision = "0001_marketplace"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            name VARCHAR(150) NOT NULL,
            email VARCHAR(255) NOT NULL UNIQUE,
            whatsapp VARCHAR(30),
            phone VARCHAR(30),
            role VARCHAR(20) NOT NULL DEFAULT 'DRIVER',
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            is_verified BOOLEAN NOT NULL DEFAULT FALSE,
            verified_until TIMESTAMPTZ,
            document_status VARCHAR(20) NOT NULL DEFAULT 'pending',
            rating_avg NUMERIC(3, 2) NOT NULL DEFAULT 0,
            rating_count INTEGER NOT NULL DEFAULT 0,
            credit_balance NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (credit_balance >= 0),
            slug VARCHAR(180) UNIQUE,
            avatar_url VARCHAR(512),
            city VARCHAR(120),
            bio TEXT,
            vehicle_type VARCHAR(60),
            body_type VARCHAR(60),
            preferred_region VARCHAR(60),
            push_token VARCHAR(255),
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            deleted_at TIMESTAMPTZ
        );
        CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);
        CREATE INDEX IF NOT EXISTS idx_users_match ON users(vehicle_type, body_type);
        CREATE INDEX IF NOT EXISTS idx_users_region ON users(preferred_region);

        CREATE TABLE IF NOT EXISTS freights (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            origin_city VARCHAR(120) NOT NULL,
            origin_state VARCHAR(2) NOT NULL DEFAULT '',
            dest_city VARCHAR(120) NOT NULL,
            dest_state VARCHAR(2) NOT NULL DEFAULT '',
            product VARCHAR(150) NOT NULL,
            weight NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (weight >= 0),
            price NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (price >= 0),
            vehicle_type VARCHAR(60) NOT NULL DEFAULT 'Qualquer',
            body_type VARCHAR(60) NOT NULL DEFAULT 'Qualquer',
            description TEXT,
            whatsapp VARCHAR(30),
            status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
            slug VARCHAR(255) NOT NULL UNIQUE,
            is_featured BOOLEAN NOT NULL DEFAULT FALSE,
            expires_at TIMESTAMPTZ,
            assigned_driver_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            payment_status VARCHAR(20) NOT NULL DEFAULT 'PENDING',
            views_count INTEGER NOT NULL DEFAULT 0,
            clicks_count INTEGER NOT NULL DEFAULT 0,
            finished_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            deleted_at TIMESTAMPTZ
        );
        CREATE INDEX IF NOT EXISTS idx_freights_user_id ON freights(user_id);
        CREATE INDEX IF NOT EXISTS idx_freights_status ON freights(status) WHERE deleted_at IS NULL;
        CREATE INDEX IF NOT EXISTS idx_freights_expires_at ON freights(expires_at);

        CREATE TABLE IF NOT EXISTS ads (
            id SERIAL PRIMARY KEY,
            user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            title VARCHAR(150) NOT NULL,
            category VARCHAR(60) NOT NULL DEFAULT 'OUTROS',
            description TEXT,
            image_url VARCHAR(512),
            destination_url VARCHAR(512),
            position VARCHAR(40) NOT NULL DEFAULT 'sidebar',
            location_city VARCHAR(120),
            location_state VARCHAR(40),
            status VARCHAR(20) NOT NULL DEFAULT 'active',
            views_count INTEGER NOT NULL DEFAULT 0,
            clicks_count INTEGER NOT NULL DEFAULT 0,
            expires_at TIMESTAMPTZ,
            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_ads_serving ON ads(position, status) WHERE is_deleted = FALSE;

        CREATE TABLE IF NOT EXISTS click_logs (
            id SERIAL PRIMARY KEY,
            user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            target_id INTEGER NOT NULL,
            target_type VARCHAR(20) NOT NULL,
            event_type VARCHAR(40) NOT NULL,
            ip_address VARCHAR(64),
            user_agent VARCHAR(255),
            referer_url VARCHAR(255),
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_click_logs_target ON click_logs(target_type, target_id, event_type);
        CREATE INDEX IF NOT EXISTS idx_click_logs_created_at ON click_logs(created_at);

        CREATE TABLE IF NOT EXISTS credit_transactions (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            ad_id INTEGER REFERENCES ads(id) ON DELETE SET NULL,
            amount NUMERIC(12, 2) NOT NULL,
            kind VARCHAR(20) NOT NULL,
            event_type VARCHAR(40),
            status VARCHAR(30) NOT NULL DEFAULT 'completed',
            note TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_credit_transactions_user ON credit_transactions(user_id, created_at DESC);

        CREATE TABLE IF NOT EXISTS notifications (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            title VARCHAR(150) NOT NULL,
            message TEXT NOT NULL,
            type VARCHAR(30) NOT NULL DEFAULT 'system',
            priority VARCHAR(10) NOT NULL DEFAULT 'medium',
            action_url VARCHAR(512),
            metadata JSON,
            is_read BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_notifications_user_unread ON notifications(user_id, is_read);
        CREATE INDEX IF NOT EXISTS idx_notifications_created_at ON notifications(created_at);

        CREATE TABLE IF NOT EXISTS site_settings (
            setting_key VARCHAR(80) PRIMARY KEY,
            setting_value VARCHAR(255),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE TABLE IF NOT EXISTS reviews (
            id SERIAL PRIMARY KEY,
            reviewer_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            target_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            freight_id INTEGER REFERENCES freights(id) ON DELETE SET NULL,
            target_type VARCHAR(20) NOT NULL DEFAULT 'USER',
            rating SMALLINT NOT NULL CHECK (rating BETWEEN 1 AND 5),
            comment TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );
        CREATE INDEX IF NOT EXISTS idx_reviews_target ON reviews(target_id, target_type);
        CREATE UNIQUE INDEX IF NOT EXISTS uq_reviews_reviewer_target_freight
            ON reviews(reviewer_id, target_id, freight_id);
    """)


def downgrade():
    op.execute("""
        DROP TABLE IF EXISTS reviews CASCADE;
        DROP TABLE IF EXISTS site_settings CASCADE;
        DROP TABLE IF EXISTS notifications CASCADE;
        DROP TABLE IF EXISTS credit_transactions CASCADE;
        DROP TABLE IF EXISTS click_logs CASCADE;
        DROP TABLE IF EXISTS ads CASCADE;
        DROP TABLE IF EXISTS freights CASCADE;
        DROP TABLE IF EXISTS users CASCADE;
    """)
