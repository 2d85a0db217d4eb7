from datetime import date

from sqlalchemy import create_engine
from sqlalchemy import Column, String, Integer, Float, Boolean, Date, Table
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.schema import ForeignKey

from filtersql import SqlAlchemyCatalog


Base = declarative_base()


class Company(Base):
    __tablename__ = 'companies'

    id = Column(Integer, primary_key=True)
    name = Column(String)

    users = relationship(lambda: User, back_populates='company')

    def __repr__(self):
        return 'Company(id={}, name={!r})'.format(self.id, self.name)


class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    external_id = Column(String, unique=True, nullable=False)
    name = Column(String)
    email = Column(String, nullable=True)
    company_id = Column(Integer, ForeignKey(Company.id), nullable=True)

    company = relationship(Company, back_populates='users')
    products = relationship(lambda: Product, back_populates='owner')

    def __repr__(self):
        return 'User(id={}, name={!r})'.format(self.id, self.name)


product_tags = Table(
    'product_tags', Base.metadata,
    Column('product_id', Integer, ForeignKey('products.id'), primary_key=True),
    Column('tag_id', Integer, ForeignKey('tags.id'), primary_key=True),
)


class Product(Base):
    __tablename__ = 'products'

    id = Column(Integer, primary_key=True)
    name = Column(String)
    category = Column(String)
    price = Column(Float)
    score = Column(Integer)
    in_stock = Column(Boolean)
    created = Column(Date)
    owner_id = Column(Integer, ForeignKey(User.id), nullable=True)

    owner = relationship(User, back_populates='products')
    tags = relationship(lambda: Tag, secondary=product_tags, back_populates='products')

    def __repr__(self):
        return 'Product(id={}, name={!r})'.format(self.id, self.name)


class Tag(Base):
    __tablename__ = 'tags'
    # Entity-level options
    __filtersql__ = dict(page_size=5, order_by='name', order_dir='DESC')

    id = Column(Integer, primary_key=True)
    name = Column(String)

    products = relationship(Product, secondary=product_tags, back_populates='tags')


# Catalog of all models
catalog = SqlAlchemyCatalog([Company, User, Product, Tag])


def init_database():
    """ Init DB

    An in-memory SQLite database: one connection, shared by every session and thread.

    :rtype: (sqlalchemy.engine.Engine, sqlalchemy.orm.sessionmaker)
    """
    engine = create_engine('sqlite://', echo=False,
                           poolclass=StaticPool,
                           connect_args={'check_same_thread': False})
    Session = sessionmaker(bind=engine)
    return engine, Session


def create_all(engine):
    """ Create all tables """
    Base.metadata.create_all(bind=engine)


def drop_all(engine):
    """ Drop all tables """
    Base.metadata.drop_all(bind=engine)


def content_samples():
    """ Generate content samples """
    sale, new = Tag(id=1, name='sale'), Tag(id=2, name='new')
    return [[
        Company(id=1, name='Acme'),
        Company(id=2, name='Globex'),
    ], [
        User(id=7, external_id='ext-007', name='Alice', email='alice@example.com', company_id=1),
        User(id=8, external_id='ext-008', name='Bob', email='bob@example.org', company_id=2),
        User(id=9, external_id='ext-009', name='Carol', email=None, company_id=None),
    ], [
        sale, new,
        Product(id=1, name='Laptop', category='electronics', price=99.99, score=1, in_stock=True,
                created=date(2024, 1, 10), owner_id=7, tags=[sale]),
        Product(id=2, name='Phone', category='electronics', price=250.0, score=5, in_stock=True,
                created=date(2024, 2, 15), owner_id=8, tags=[sale, new]),
        Product(id=3, name='Monitor 100%', category='electronics', price=999.0, score=10, in_stock=False,
                created=date(2024, 3, 20), owner_id=7, tags=[new]),
        Product(id=4, name='Chair', category='Furniture', price=300.0, score=3, in_stock=True,
                created=date(2024, 4, 25), owner_id=9, tags=[]),
    ]]


def get_empty_db():
    # Connect, create tables
    engine, Session = init_database()
    drop_all(engine)
    create_all(engine)
    return engine, Session


def get_working_db_for_tests():
    # Connect, create tables
    engine, Session = get_empty_db()

    # Fill DB
    ssn = Session()
    for entities_list in content_samples():
        ssn.add_all(entities_list)
        ssn.commit()
    ssn.close()

    # Done
    return engine, Session
