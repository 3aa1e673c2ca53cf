import pytest

import catalog
from conftest import FakeFirestore, seed_course, seed_user


class TestCourseLifecycle:

    def setup_method(self):
        self.db = FakeFirestore()
        self.instructor = {**seed_user(self.db, 'prof', role='instructor'), 'uid': 'prof'}

    def test_create_requires_approval(self):
        with pytest.raises(catalog.CourseError, match="approuvé"):
            catalog.create_course(self.db, {**self.instructor, 'isInstructorApproved': False}, 'Cours de design')

    def test_create_requires_title_of_five_characters(self):
        with pytest.raises(catalog.CourseError):
            catalog.create_course(self.db, self.instructor, 'Abc')

    def test_create_starts_as_draft(self):
        course = catalog.get_course(self.db, catalog.create_course(self.db, self.instructor, 'Python pour tous'))
        assert course['status'] == 'Draft' and course['titleLower'] == 'python pour tous' and course['instructorId'] == 'prof'

    def test_submit_needs_description_and_category(self):
        course = catalog.get_course(self.db, catalog.create_course(self.db, self.instructor, 'Python pour tous'))
        with pytest.raises(catalog.CourseError):
            catalog.submit_for_review(self.db, course)
        catalog.update_course(self.db, course['id'], catalog.course_update_payload({'title': 'Python pour tous', 'description': 'Bases', 'category': 'Data Science', 'price': '5000'}))
        catalog.submit_for_review(self.db, catalog.get_course(self.db, course['id']))
        assert catalog.get_course(self.db, course['id'])['status'] == 'Pending Review'

    def test_update_payload_validates_price(self):
        with pytest.raises(catalog.CourseError):
            catalog.course_update_payload({'title': 'Titre', 'price': '-1'})
        payload = catalog.course_update_payload({'title': 'Titre', 'price': '2500', 'learningObjectives': 'Un\n\nDeux\n'})
        assert payload['price'] == 2500 and payload['learningObjectives'] == ['Un', 'Deux']

    @pytest.mark.parametrize('price', ['nan', 'inf', 'abc'])
    def test_update_payload_rejects_non_numeric_price(self, price):
        with pytest.raises(catalog.CourseError, match="nombre"):
            catalog.course_update_payload({'title': 'Titre', 'price': price})

    def test_update_payload_content_type(self):
        payload = catalog.course_update_payload({'title': 'Titre', 'contentType': 'ebook', 'ebookUrl': ' https://cdn.example.com/livre.pdf '})
        assert payload['contentType'] == 'ebook' and payload['ebookUrl'] == 'https://cdn.example.com/livre.pdf'
        assert catalog.course_update_payload({'title': 'Titre'})['contentType'] == 'video'
        with pytest.raises(catalog.CourseError):
            catalog.course_update_payload({'title': 'Titre', 'contentType': 'podcast'})

    def test_publish_sets_published_at(self):
        seed_course(self.db, 'c1', status='Pending Review')
        catalog.set_course_status(self.db, 'c1', 'Published')
        assert self.db.data('courses/c1')['publishedAt'] is not None
        with pytest.raises(catalog.CourseError):
            catalog.set_course_status(self.db, 'c1', 'Archived')


class TestContentTree:

    def setup_method(self):
        self.db = FakeFirestore()
        seed_course(self.db, 'c1')
        self.first = catalog.add_section(self.db, 'c1', 'Introduction')
        self.second = catalog.add_section(self.db, 'c1', 'Avancé')

    def orders(self):
        return {sid: self.db.data(f"courses/c1/sections/{sid}")['order'] for sid in (self.first, self.second)}

    def test_sections_are_appended(self):
        assert self.orders() == {self.first: 0, self.second: 1}

    def test_move_swaps_with_neighbour(self):
        assert catalog.move_section(self.db, 'c1', self.second, 'up')
        assert self.orders() == {self.first: 1, self.second: 0}

    def test_move_at_edge_is_refused(self):
        assert not catalog.move_section(self.db, 'c1', self.first, 'up')
        assert not catalog.move_section(self.db, 'c1', self.second, 'down')
        assert self.orders() == {self.first: 0, self.second: 1}

    def test_move_unknown_section(self):
        with pytest.raises(catalog.CourseError, match="introuvable"):
            catalog.move_section(self.db, 'c1', 'missing', 'down')

    def test_resources_belong_to_their_course(self):
        second = catalog.add_resource(self.db, 'c1', 'Workbook', 'https://cdn.example.com/workbook.pdf')
        catalog.add_resource(self.db, 'c1', 'Annexe', 'https://cdn.example.com/annexe.pdf')
        self.db.docs['resources/other'] = {'courseId': 'c2', 'title': 'Autre', 'url': 'https://cdn.example.com/autre.pdf'}
        assert [r['title'] for r in catalog.course_resources(self.db, 'c1')] == ['Annexe', 'Workbook']
        with pytest.raises(catalog.CourseError):
            catalog.add_resource(self.db, 'c1', 'Lien', 'javascript:alert(1)')
        with pytest.raises(catalog.CourseError):
            catalog.delete_resource(self.db, 'c1', 'other')
        catalog.delete_resource(self.db, 'c1', second)
        assert [r['title'] for r in catalog.course_resources(self.db, 'c1')] == ['Annexe']

    def test_delete_section_removes_lectures(self):
        lecture_id = catalog.add_lecture(self.db, 'c1', self.first, {'title': 'Bienvenue', 'duration': '5', 'isFreePreview': 'on'})
        lecture = self.db.data(f"courses/c1/sections/{self.first}/lectures/{lecture_id}")
        assert lecture['isFreePreview'] and lecture['duration'] == 5.0 and lecture['order'] == 0
        catalog.delete_section(self.db, 'c1', self.first)
        assert not any(path.startswith(f"courses/c1/sections/{self.first}") for path in self.db.docs)


class TestSearch:

    def setup_method(self):
        self.db = FakeFirestore()
        seed_user(self.db, 'prof', role='instructor')
        seed_course(self.db, 'free', title='Excel gratuit', titleLower='excel gratuit', price=0, category='Finance')
        seed_course(self.db, 'paid', title='Excel avancé', titleLower='excel avancé', price=5000, category='Finance')
        seed_course(self.db, 'draft', title='Excel brouillon', titleLower='excel brouillon', status='Draft')
        seed_course(self.db, 'design', title='Design web', titleLower='design web', price=3000, category='Design')

    def ids(self, results):
        return sorted(c['id'] for c in results)

    def test_prefix_search_on_published_courses(self):
        assert self.ids(catalog.search_courses(self.db, 'Excel')) == ['free', 'paid']

    def test_free_filter(self):
        assert self.ids(catalog.search_courses(self.db, 'excel', catalog.FREE_FILTER)) == ['free']

    def test_category_filter(self):
        assert self.ids(catalog.search_courses(self.db, '', 'Design')) == ['design']

    def test_no_term_lists_recent(self):
        results = catalog.search_courses(self.db)
        assert self.ids(results) == ['design', 'free', 'paid']
        assert results[0]['instructor']['fullName'] == 'Prof'


class TestReviewsAndWishlist:

    def setup_method(self):
        self.db = FakeFirestore()
        seed_course(self.db, 'c1')

    def test_review_requires_enrollment(self):
        with pytest.raises(catalog.CourseError):
            catalog.submit_review(self.db, 'c1', 'stu', 5, 'Super', is_enrolled=False)

    def test_one_review_per_student(self):
        catalog.submit_review(self.db, 'c1', 'stu', 3, 'Bien', is_enrolled=True)
        catalog.submit_review(self.db, 'c1', 'stu', 5, 'Excellent', is_enrolled=True)
        reviews = catalog.course_reviews(self.db, 'c1')
        assert len(reviews) == 1
        assert catalog.review_summary(reviews) == {'count': 1, 'average': 5.0}

    @pytest.mark.parametrize('rating', [0, 6, None])
    def test_rating_bounds(self, rating):
        with pytest.raises(catalog.CourseError):
            catalog.submit_review(self.db, 'c1', 'stu', rating, 'Bof', is_enrolled=True)

    def test_wishlist_toggle(self):
        assert catalog.toggle_wishlist(self.db, 'stu', 'c1')
        assert [c['id'] for c in catalog.wishlist_courses(self.db, 'stu')] == ['c1']
        assert not catalog.toggle_wishlist(self.db, 'stu', 'c1')
        assert not catalog.is_in_wishlist(self.db, 'stu', 'c1')
